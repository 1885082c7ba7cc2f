from apng2webp.cli.main import cli_entry

cli_entry()
