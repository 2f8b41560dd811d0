from django.conf import settings
from django.core.management.base import BaseCommand

from services.offers import expire_stale_offers


class Command(BaseCommand):
    help = "Expire pending ride offers that have been waiting too long."

    def add_arguments(self, parser):
        parser.add_argument(
            "--timeout",
            type=int,
            default=None,
            help="Age in seconds after which a pending offer expires "
                 "(default: RIDE_OFFER_TTL_SECONDS).",
        )

    def handle(self, *args, **options):
        timeout = options["timeout"]
        if timeout is None:
            timeout = getattr(settings, "RIDE_OFFER_TTL_SECONDS", 900)

        expired_count = expire_stale_offers(max_age_seconds=timeout)

        self.stdout.write(
            self.style.SUCCESS(f"Expired {expired_count} offer(s) older than {timeout}s.")
        )
