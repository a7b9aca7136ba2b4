"""CLI script to import course catalog files into the backend DB.

Usage: python scripts/import_catalog.py [FOLDER] [--term TERM] [--dry-run]
"""
import sys
import argparse
import pathlib
from typing import Optional
# Ensure `backend/` is on sys.path so `efs` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from efs.database import engine, create_db_and_tables
from efs import services
from efs.utils.catalog_loader import find_catalog_files


def main(folder: pathlib.Path, term: Optional[str] = None, dry_run: bool = False) -> int:
    """Import every catalog file found under `folder`.

    Results are printed to stdout for a quick CLI feedback loop. Returns
    the number of files that failed to import.
    """
    if not folder.exists():
        print(f'Catalog folder not found at {folder}')
        return 1
    files = find_catalog_files(folder, term=term)
    if not files:
        print('No files found to import')
        return 0
    create_db_and_tables()
    failed = 0
    with Session(engine) as session:
        svc = services.AdminService(session)
        total_created = total_updated = total_sessions = 0
        for f in files:
            try:
                result = svc.import_catalog(f.read_bytes(), f.name, dry_run=dry_run)
            except (OSError, ValueError) as e:
                failed += 1
                print(f'Error importing {f}: {e}')
                continue
            total_created += result['created']
            total_updated += result['updated']
            total_sessions += result['sessions']
            print(
                f"Imported {f}: created {result['created']}, updated {result['updated']}, "
                f"sessions {result['sessions']}, skipped {result['skipped']}, errors {len(result['errors'])}"
            )
        print(f'Total: created {total_created}, updated {total_updated}, sessions {total_sessions}')
    return failed


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('folder', nargs='?', default=str(ROOT.parent / 'Catalog'))
    parser.add_argument('--term', help='Import only from this term subfolder')
    parser.add_argument('--dry-run', action='store_true', help='Parse and count without writing')
    args = parser.parse_args()
    sys.exit(1 if main(pathlib.Path(args.folder), term=args.term, dry_run=args.dry_run) else 0)
