from app.golfpoi import create_app

app = create_app()
