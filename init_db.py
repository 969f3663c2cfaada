from sqlalchemy.exc import SQLAlchemyError

from assignhub import create_app, db


def init_database():
    app = create_app()
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("Database tables created at %s", app.config['SQLALCHEMY_DATABASE_URI'])
            print("Database tables created successfully.")
        except SQLAlchemyError as e:
            print(f"Database setup failed: {e}")
            raise


if __name__ == "__main__":
    init_database()
