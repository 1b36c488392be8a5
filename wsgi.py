import os
from dotenv import load_dotenv

load_dotenv()

from storefront import create_app

config = os.getenv("APP_ENV", "production")

app = create_app(config)
