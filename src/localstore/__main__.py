from localstore.cli.main import main

main()
