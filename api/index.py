import logging

from mangum import Mangum

from wallet.api import create_app
from wallet.config import Settings

logging.basicConfig(level=logging.INFO)

settings = Settings.from_env()
app = create_app(settings)
app.root_path = "/api"

handler = Mangum(app)
