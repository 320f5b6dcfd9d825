# run.py
import os
import sys
from gunicorn.app.base import BaseApplication

class ArchiverApplication(BaseApplication):
    def __init__(self, options):
        self.options = options
        super().__init__()

    def load_config(self):
        for key, value in self.options.items():
            self.cfg.set(key, value)

    def load(self):
        from archiver.main import app
        return app

def main():
    sys.path.insert(0, os.getcwd())

    # A single worker: the gateway connection and the pending event queue
    # belong to one process.
    options = {
        "bind": "0.0.0.0:8000",
        "workers": 1,
        "worker_class": "uvicorn.workers.UvicornWorker",
        "proc_name": "discord_archiver",
    }

    ArchiverApplication(options).run()

if __name__ == "__main__":
    main()
