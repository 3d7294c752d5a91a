from switchboard.main import cli

cli()
