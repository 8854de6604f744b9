from ghstars.cli import app

app(prog_name="gh-stars")
