from creditkeeper.ui.cli import run

run()
