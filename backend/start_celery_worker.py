#!/usr/bin/env python3
"""Start a Celery worker that drives import sessions from the imports queue."""

import sys
import warnings

from celery.bin import worker

# Containers usually run the worker as root
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from company_importer.core.logging import configure_logging
from company_importer.workers.celery_app import IMPORTS_QUEUE, celery_app

if __name__ == '__main__':
    configure_logging()
    worker_app = worker.worker(app=celery_app)

    sys.argv = [
        'celery',
        '-A', 'company_importer.workers.celery_app.celery_app',
        'worker',
        '--loglevel=info',
        f'--queues={IMPORTS_QUEUE}',
        '--pool=threads',
        '--without-mingle',
        '--without-gossip',
    ] + sys.argv[1:]

    worker_app.run()
