from crediario import create_app

app = create_app()
