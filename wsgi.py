from orgassess import create_app

app = create_app()
