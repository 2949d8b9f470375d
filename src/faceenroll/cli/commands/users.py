"""add-user command: seed a card holder into the enrollment store."""

from faceenroll.paths import get_snapshots_dir, get_store_path
from faceenroll.store import EnrollmentStore


def open_store(args) -> EnrollmentStore:
    """Open the store named by --store/--snapshots, or the defaults."""
    store_path = args.store or get_store_path()
    snapshots = args.snapshots or get_snapshots_dir()
    return EnrollmentStore.open(store_path, snapshots_dir=snapshots,
                                descriptor_dim=getattr(args, "descriptor_dim", 128))


def run_add_user(args) -> int:
    """Register a user and save the store."""
    store = open_store(args)
    try:
        user = store.add_user(args.name, args.username, args.card)
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    store.save()
    print(f"Added user {user.id}: {user.name} ({user.username}) -> {store.path}")
    return 0
