from msgbridge.main import main

main()
