"""serve command: run the identity server until interrupted."""

import logging

from faceenroll.cli.commands.users import open_store

logger = logging.getLogger(__name__)


def run_serve(args) -> int:
    from faceenroll.store.server import IdentityServer

    store = open_store(args)
    server = IdentityServer(store, address=args.address)
    logger.info(
        "Serving %d users, %d enrollments from %s",
        len(store.users), len(store.enrollments), store.path,
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        server.stop()
    return 0
