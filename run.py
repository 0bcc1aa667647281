import os
import sys

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from bookshelf import create_app

# Served by Gunicorn; the cache store and async bridge are per process
app = create_app()


def gunicorn_command():
    return [
        "gunicorn",
        "-w", os.environ.get('GUNICORN_WORKERS', '1'),
        "-b", os.environ.get('BIND', '0.0.0.0:5054'),
        "run:app",
    ]


if __name__ == '__main__':
    command = gunicorn_command()
    print(f"Launching Gunicorn with command: {' '.join(command)}")
    try:
        os.execvp(command[0], command)
    except FileNotFoundError:
        print("Error: 'gunicorn' command not found.", file=sys.stderr)
        print("Install it with: pip install gunicorn", file=sys.stderr)
        sys.exit(1)
