from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi_server import app  # noqa: E402
