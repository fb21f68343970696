from app.edms import create_app

app = create_app()
