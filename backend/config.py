import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///waypoint.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SITE_URL = (os.environ.get('SITE_URL') or 'http://localhost:8090').rstrip('/')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Uploaded images are sharded by date below this directory
    UPLOADS_DIR = os.environ.get('UPLOADS_DIR') or 'uploads'
    # Payments. Empty secrets disable the purchase path.
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY', '')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET', '')
    STRIPE_WEBHOOK_TOLERANCE_SEC = int(os.environ.get('STRIPE_WEBHOOK_TOLERANCE_SEC', '300'))
    CREDIT_PRICE_CENTS = int(os.environ.get('CREDIT_PRICE_CENTS', '35'))
    MIN_CREDITS_PER_PURCHASE = int(os.environ.get('MIN_CREDITS_PER_PURCHASE', '3'))
    MAX_CREDITS_PER_PURCHASE = int(os.environ.get('MAX_CREDITS_PER_PURCHASE', '1000'))
    STALE_PURCHASE_DAYS = int(os.environ.get('STALE_PURCHASE_DAYS', '7'))
    # Monthly free credit ceilings
    REGULAR_USER_FREE_CREDITS = int(os.environ.get('REGULAR_USER_FREE_CREDITS', '10'))
    EDUCATOR_FREE_CREDITS = int(os.environ.get('EDUCATOR_FREE_CREDITS', '50'))
    # SMTP is only used by the identity layer
    SMTP_HOST = os.environ.get('SMTP_HOST', '')
    SMTP_PORT = int(os.environ.get('SMTP_PORT', '587'))
    SMTP_USER = os.environ.get('SMTP_USER', '')
    SMTP_PASSWORD = os.environ.get('SMTP_PASSWORD', '')
