from mangum import Mangum

from ledger.api import app

handler = Mangum(app, lifespan="off")
