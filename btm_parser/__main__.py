from btm_parser.cli import main

main()
