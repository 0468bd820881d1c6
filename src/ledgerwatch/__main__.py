from ledgerwatch.cli import main

main()
