from django.core.management.base import BaseCommand

from delivery.services import expire_stale_quotes


class Command(BaseCommand):
    help = "Mark PENDING and SELECTED delivery quotes past their expiry as EXPIRED."

    def handle(self, *args, **options):
        count = expire_stale_quotes()
        self.stdout.write(self.style.SUCCESS(f"Expired {count} delivery quotes"))
