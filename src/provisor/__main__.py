from provisor.cli.app import app

app()
