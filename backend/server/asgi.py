"""
ASGI entry point for the WhatsApp link API.

.env is loaded before AppConfig reads the environment, so local runs can
keep EVOLUTION_API_* and SUPABASE_* credentials there:

    uvicorn server.asgi:app --app-dir backend
"""

from dotenv import load_dotenv

load_dotenv()

from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app()
