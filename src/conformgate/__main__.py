from conformgate.cli import app

app(prog_name="conformgate")
