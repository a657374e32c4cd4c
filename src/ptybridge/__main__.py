from ptybridge.cli import app

app()
