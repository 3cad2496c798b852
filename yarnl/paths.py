import os


def get_data_dir():
    # YARNL_DATA_DIR wins; otherwise keep data next to the package checkout.
    base = os.environ.get("YARNL_DATA_DIR", "").strip()
    if not base:
        base = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "data")

    os.makedirs(base, exist_ok=True)
    return base


def _subdir(name):
    path = os.path.join(get_data_dir(), name)
    os.makedirs(path, exist_ok=True)
    return path


def get_db_path():
    return os.path.join(get_data_dir(), "yarnl.db")


def get_patterns_dir():
    return _subdir("patterns")


def get_images_dir():
    return _subdir("images")


def get_archive_dir():
    return _subdir("archive")


def get_backups_dir():
    return _subdir("backups")
