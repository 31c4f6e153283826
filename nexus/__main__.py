from nexus.main import main

main()
