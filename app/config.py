import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DEFAULT_CAMPAIGN_SLUG = os.getenv("DEFAULT_CAMPAIGN_SLUG", "homesc")

BEEHIIV_API_KEY = os.getenv("BEEHIIV_API_KEY")
BEEHIIV_PUBLICATION_ID = os.getenv(
    "BEEHIIV_PUBLICATION_ID",
    "pub_4b47c3db-7b59-4c82-a18b-16cf10fc2d23"
)

SPREADSHEET_ID = os.getenv("SPREADSHEET_ID")
SHEET_NAME = os.getenv("SHEET_NAME", "Sweepstakes Entries")
GOOGLE_SERVICE_ACCOUNT = os.getenv("GOOGLE_SERVICE_ACCOUNT")
GOOGLE_APPLICATION_CREDENTIALS = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")

REFERRAL_BASE_URL = os.getenv(
    "REFERRAL_BASE_URL",
    "https://dmlearninglab.com/homesc/"
)
REFERRAL_OFFER_ID = os.getenv("REFERRAL_OFFER_ID", "1987")


def configure_logging():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )
