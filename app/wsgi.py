from app.workhub import create_app

app = create_app()
