import stripe
from tutorbook.configs.settings import settings

stripe.api_key = settings.STRIPE_SECRET_KEY

class StripeConfig:
    def __init__(self):
        self.secret_key = settings.STRIPE_SECRET_KEY
        self.public_key = settings.STRIPE_PUBLIC_KEY
        self.webhook_secret = settings.STRIPE_WEBHOOK_SECRET

    def init(self):
        stripe.api_key = self.secret_key
        # Los reintentos los gestiona el coordinador de pagos
        stripe.max_network_retries = 0

stripe_config = StripeConfig()
stripe_config.init()
