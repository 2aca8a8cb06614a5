#!/usr/bin/env python3
"""Operator CLI for the CRM dialer.

Usage:
    crm-dialer serve                          # Run the API server
    crm-dialer import-csv leads.csv           # Import contacts from CSV
    crm-dialer import-vapi-calls              # Backfill call logs from Vapi
    crm-dialer cost-report [--json]           # Spend and voicemail waste
    crm-dialer transcribe call.wav --summary  # Transcribe a recording
    crm-dialer create-profile a@b.com --role admin
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from uuid import UUID

from crm_dialer.config import get_settings
from crm_dialer.core.exceptions import CRMDialerError
from crm_dialer.core.logging import get_logger, setup_logging
from crm_dialer.db.models.auth import ProfileModel
from crm_dialer.db.repositories.profiles import ProfileRepository
from crm_dialer.db.session import close_db, get_db_context, init_db
from crm_dialer.domain import Campaign, Role
from crm_dialer.integrations.transcription import TranscriptionClient
from crm_dialer.integrations.vapi import VapiClient
from crm_dialer.services.csv_import import import_csv
from crm_dialer.services.reporting import cost_report
from crm_dialer.services.vapi_import import import_vapi_calls

log = get_logger(__name__)


def _run(coro) -> int:
    """Run a command coroutine against an initialised database."""

    async def runner() -> int:
        await init_db()
        try:
            return await coro
        finally:
            await close_db()

    try:
        return asyncio.run(runner())
    except CRMDialerError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def serve(args: argparse.Namespace) -> int:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "crm_dialer.main:app",
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def import_csv_file(args: argparse.Namespace) -> int:
    """Import contacts from a CSV file."""
    path = Path(args.file)
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        return 1

    text = path.read_text(encoding="utf-8-sig", errors="replace")

    async def run() -> int:
        async with get_db_context() as db:
            owner_id: UUID | None = None
            if args.owner:
                profile = await ProfileRepository(db).find_by_email(args.owner)
                if profile is None:
                    print(f"No profile with email {args.owner}", file=sys.stderr)
                    return 1
                owner_id = profile.id

            result = await import_csv(db, text, owner_id=owner_id, source=path.name)

        print(f"Parsed:       {result.parsed}")
        print(f"Imported:     {result.imported}")
        print(f"Skipped (DNC): {result.skipped_dnc}")
        return 0 if result.parsed else 1

    return _run(run())


def import_vapi_history(args: argparse.Namespace) -> int:
    """Backfill call logs from Vapi's call list."""
    settings = get_settings()
    if not settings.vapi.api_key:
        print("CRM_VAPI__API_KEY is not set", file=sys.stderr)
        return 1

    async def run() -> int:
        vapi = VapiClient.from_settings(settings)
        try:
            async with get_db_context() as db:
                result = await import_vapi_calls(db, vapi, limit=args.limit)
        finally:
            await vapi.close()

        for key, value in result.to_dict().items():
            print(f"{key}: {value}")
        return 0

    return _run(run())


def show_cost_report(args: argparse.Namespace) -> int:
    """Print spend, billed minutes and the voicemail share."""

    async def run() -> int:
        async with get_db_context() as db:
            report = await cost_report(db)
        data = report.to_dict()

        if args.json:
            print(json.dumps(data, indent=2))
            return 0

        print("\n=== Call Cost Report ===\n")
        print(f"Total cost:         ${data['total_cost']:.2f}")
        print(f"Billed calls:       {data['billed_calls']}")
        print(f"Billed minutes:     {data['billed_minutes']}")
        print(f"Avg cost per call:  ${data['avg_cost_per_call']:.2f}")
        print()
        print(f"Voicemails:         {data['voicemail_count']}")
        print(f"Voicemail cost:     ${data['voicemail_cost']:.2f}")
        print(f"Voicemail share:    {data['voicemail_share_percent']}%")
        return 0

    return _run(run())


def transcribe_file(args: argparse.Namespace) -> int:
    """Transcribe a local audio file (and optionally summarise it)."""
    path = Path(args.audio_file)
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        return 1

    settings = get_settings()

    async def run() -> int:
        client = TranscriptionClient.from_settings(settings.openai)
        try:
            transcript = await client.transcribe(path.read_bytes(), path.name)
            print("\n--- Transcript ---\n")
            print(transcript)
            if args.summary:
                summary = await client.summarize(transcript)
                print("\n--- Summary ---\n")
                print(json.dumps(summary, indent=2))
        except CRMDialerError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        finally:
            await client.close()
        return 0

    return asyncio.run(run())


def create_profile(args: argparse.Namespace) -> int:
    """Create a dashboard profile."""

    async def run() -> int:
        async with get_db_context() as db:
            repo = ProfileRepository(db)
            if await repo.find_by_email(args.email) is not None:
                print(f"Profile {args.email} already exists", file=sys.stderr)
                return 1

            profile = await repo.create(
                ProfileModel(
                    email=args.email.strip().lower(),
                    full_name=args.name,
                    role=args.role,
                    assigned_campaign=args.campaign,
                )
            )
            print(f"Created {profile.role} profile {profile.email} ({profile.id})")
        return 0

    return _run(run())


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="CRM Dialer CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", type=str, default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    # import-csv
    csv_parser = subparsers.add_parser("import-csv", help="Import contacts from CSV")
    csv_parser.add_argument("file", type=str, help="CSV file (comma or semicolon separated)")
    csv_parser.add_argument("--owner", type=str, default=None, help="Owner profile email")

    # import-vapi-calls
    vapi_parser = subparsers.add_parser("import-vapi-calls", help="Backfill call logs from Vapi")
    vapi_parser.add_argument("--limit", type=int, default=1000)

    # cost-report
    cost_parser = subparsers.add_parser("cost-report", help="Show call spend")
    cost_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # transcribe
    transcribe_parser = subparsers.add_parser("transcribe", help="Transcribe an audio file")
    transcribe_parser.add_argument("audio_file", type=str)
    transcribe_parser.add_argument("--summary", action="store_true", help="Also summarise the call")

    # create-profile
    profile_parser = subparsers.add_parser("create-profile", help="Create a dashboard profile")
    profile_parser.add_argument("email", type=str)
    profile_parser.add_argument("--name", type=str, default=None)
    profile_parser.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.USER.value,
    )
    profile_parser.add_argument(
        "--campaign",
        choices=[c.value for c in Campaign],
        default=Campaign.RESIDENTIAL.value,
    )

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    setup_logging(level=settings.log_level, json_output=settings.log_json)

    commands = {
        "serve": serve,
        "import-csv": import_csv_file,
        "import-vapi-calls": import_vapi_history,
        "cost-report": show_cost_report,
        "transcribe": transcribe_file,
        "create-profile": create_profile,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
