from groupbook.main import run

run()
