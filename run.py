"""
Entry point for running the forecast dashboard backend.
Uses the app factory pattern to create and run the app.
"""
import logging
import os

from forecast import create_app

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = create_app()

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=5000)
