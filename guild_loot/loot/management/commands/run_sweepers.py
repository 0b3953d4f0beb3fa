"""
Management command that runs every sweep on its own interval in one process.

Run exactly one instance per database.
"""

import logging
import signal
import threading

from django.core.management.base import BaseCommand, CommandError

from guild_loot.loot.scheduler import build_default_scheduler
from guild_loot.loot.sweep_service import SWEEPS

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Run item expiration, auction settlement, vote closing and account sweeps on fixed intervals'

    def add_arguments(self, parser):
        parser.add_argument(
            '--only',
            nargs='+',
            choices=sorted(SWEEPS),
            help='Run only the named sweeps',
        )
        parser.add_argument(
            '--once',
            action='store_true',
            help='Run every selected sweep once and exit',
        )

    def handle(self, *args, **options):
        scheduler = build_default_scheduler(only=options.get('only'))
        if not scheduler.jobs:
            raise CommandError('No sweeps selected')

        if options['once']:
            ran = scheduler.run_pending()
            self.stdout.write(self.style.SUCCESS(f"Ran {', '.join(ran)}"))
            return

        stop_event = threading.Event()

        def stop(signum, frame):
            logger.info(f"Received signal {signum}, stopping sweeps")
            stop_event.set()

        signal.signal(signal.SIGINT, stop)
        signal.signal(signal.SIGTERM, stop)

        for job in scheduler.jobs.values():
            self.stdout.write(f"  {job.name}: every {int(job.interval)}s")
        scheduler.run_forever(stop_event)
        self.stdout.write(self.style.SUCCESS('Sweeps stopped'))
