from dotenv import load_dotenv

load_dotenv()

from app import create_app, create_tables, db
from app.models import Post, PostImage, User

app = create_app()
create_tables(app)

@app.shell_context_processor
def make_shell_context():
    return {'db': db, 'Post': Post, 'PostImage': PostImage, 'User': User}

if __name__ == '__main__':
    port = app.config.get('PORT', 80)
    app.logger.info(f"Nightlight CMS listening on port {port}")
    app.run(host='0.0.0.0', port=port, debug=app.config.get('DEBUG', False))
