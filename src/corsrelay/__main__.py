from corsrelay.main import run

run()
