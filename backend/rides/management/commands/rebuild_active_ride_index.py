from django.core.management.base import BaseCommand

from services.ride_management.guard import rebuild_index


class Command(BaseCommand):
    help = "Rebuild each driver's active instant ride index from the ride table."

    def add_arguments(self, parser):
        parser.add_argument(
            "--driver",
            type=int,
            action="append",
            dest="drivers",
            help="Only rebuild for this driver user id (repeatable).",
        )

    def handle(self, *args, **options):
        stats = rebuild_index(options["drivers"])
        self.stdout.write(
            self.style.SUCCESS(
                f"Checked {stats['checked']} driver(s); set {stats['set']}, cleared {stats['cleared']}."
            )
        )
