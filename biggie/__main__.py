from biggie.app import main

main()
