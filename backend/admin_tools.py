#!/usr/bin/env python3
"""
Admin tools for the Exam Engine
Command-line maintenance and reporting against the exam database
"""

import os
import argparse
from typing import Optional

from dotenv import load_dotenv
dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)


from sqlalchemy import func
from sqlalchemy.orm import Session
from exam_engine.core.constants import CallerRole
from exam_engine.core.database import SessionLocal
from exam_engine.models import Attempt, ExamResult, ExamSession, Exam, Question, Student, Violation
from exam_engine.schemas.common import Caller, OperationFailure
from exam_engine.services.result_service import ResultService
from exam_engine.services.violation_service import ViolationService
from exam_engine.tasks.maintenance import expire_stale_attempts_internal

ADMIN_CALLER = Caller(caller_id="admin-cli", role=CallerRole.ADMIN)


def _open(db: Optional[Session]):
    return (db, False) if db is not None else (SessionLocal(), True)


def expire_stale(db: Optional[Session] = None) -> dict:
    """Run the stale-attempt sweep once, in the foreground"""
    db, owned = _open(db)
    try:
        outcome = expire_stale_attempts_internal(db)
        print(f"✅ Checked {outcome['checked']} in-progress attempts, expired {outcome['expired']}")
        return outcome
    except Exception as e:
        print(f"❌ Sweep failed: {e}")
        db.rollback()
        raise
    finally:
        if owned:
            db.close()


def show_session_results(session_id: int, db: Optional[Session] = None) -> bool:
    db, owned = _open(db)
    try:
        outcome = ResultService(db).get_session_results(session_id, caller=ADMIN_CALLER)
        if isinstance(outcome, OperationFailure):
            print(f"❌ {outcome.message}")
            return False

        print(f"📋 Session {outcome.session_code} - {outcome.exam_title}")
        print(f"   Attempts: {len(outcome.attempts)}")
        print("-" * 80)
        for row in outcome.attempts:
            flag = "🚩" if row.is_flagged else "  "
            if row.result:
                score = f"{row.result.percentage_score:6.2f}% {'PASS' if row.result.passed else 'FAIL'}"
                if row.result.needs_review:
                    score += " (review)"
            else:
                score = "not scored"
            print(f"{flag} #{row.attempt_id:<6} {row.student_id:<12} {row.student_name:<25} "
                  f"{row.status:<12} warnings={row.warning_count:<3} {score}")
        return True
    finally:
        if owned:
            db.close()


def show_attempt_violations(attempt_id: int, db: Optional[Session] = None) -> bool:
    db, owned = _open(db)
    try:
        outcome = ViolationService(db).get_statistics(attempt_id, caller=ADMIN_CALLER)
        if isinstance(outcome, OperationFailure):
            print(f"❌ {outcome.message}")
            return False

        status = "🚩 FLAGGED" if outcome.is_flagged else "ok"
        print(f"🔍 Attempt {attempt_id}: {outcome.total_violations} violations, "
              f"warning_count={outcome.warning_count}, {status}")
        for violation_type, count in sorted(outcome.by_type.items()):
            print(f"   {violation_type}: {count}")
        print("-" * 60)
        for entry in outcome.timeline:
            print(f"   {entry['detected_at']}  {entry['severity']:<8} {entry['violation_type']}")
        return True
    finally:
        if owned:
            db.close()


def set_session_visibility(session_id: int, visible: bool, db: Optional[Session] = None) -> bool:
    db, owned = _open(db)
    try:
        outcome = ResultService(db).set_session_results_visibility(session_id, visible, caller=ADMIN_CALLER)
        if isinstance(outcome, OperationFailure):
            print(f"❌ {outcome.message}")
            return False
        print(f"✅ {outcome.updated} results {'released' if visible else 'hidden'}")
        return True
    finally:
        if owned:
            db.close()


def database_stats(db: Optional[Session] = None) -> dict:
    db, owned = _open(db)
    try:
        stats = {
            'students': db.query(func.count(Student.id)).scalar(),
            'exams': db.query(func.count(Exam.id)).scalar(),
            'questions': db.query(func.count(Question.id)).scalar(),
            'sessions': db.query(func.count(ExamSession.id)).scalar(),
            'active_sessions': db.query(func.count(ExamSession.id)).filter(ExamSession.is_active.is_(True)).scalar(),
            'attempts': db.query(func.count(Attempt.id)).scalar(),
            'flagged_attempts': db.query(func.count(Attempt.id)).filter(Attempt.is_flagged.is_(True)).scalar(),
            'results': db.query(func.count(ExamResult.id)).scalar(),
            'violations': db.query(func.count(Violation.id)).scalar(),
        }
        by_status = dict(db.query(Attempt.status, func.count(Attempt.id)).group_by(Attempt.status).all())

        print("📊 Database statistics")
        for key, value in stats.items():
            print(f"   {key.replace('_', ' ').capitalize()}: {value}")
        print("   Attempts by status:")
        for status, count in sorted(by_status.items()):
            print(f"      {status}: {count}")
        stats['attempts_by_status'] = by_status
        return stats
    finally:
        if owned:
            db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Admin tools for the Exam Engine")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('expire-stale', help='Submit every in-progress attempt that ran out of time')

    results_parser = subparsers.add_parser('session-results', help='Show all attempts and scores of a session')
    results_parser.add_argument('--session-id', type=int, required=True, help='Session ID')

    violations_parser = subparsers.add_parser('attempt-violations', help='Show violation statistics of an attempt')
    violations_parser.add_argument('--attempt-id', type=int, required=True, help='Attempt ID')

    visibility_parser = subparsers.add_parser('set-visibility', help='Release or hide the results of a session')
    visibility_parser.add_argument('--session-id', type=int, required=True, help='Session ID')
    group = visibility_parser.add_mutually_exclusive_group(required=True)
    group.add_argument('--visible', dest='visible', action='store_true', help='Release results to students')
    group.add_argument('--hidden', dest='visible', action='store_false', help='Hide results from students')

    subparsers.add_parser('stats', help='Show database statistics')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    print("🚀 Exam Engine - Admin Tools")
    print("=" * 50)

    if args.command == 'expire-stale':
        expire_stale()

    elif args.command == 'session-results':
        show_session_results(args.session_id)

    elif args.command == 'attempt-violations':
        show_attempt_violations(args.attempt_id)

    elif args.command == 'set-visibility':
        set_session_visibility(args.session_id, args.visible)

    elif args.command == 'stats':
        database_stats()


if __name__ == "__main__":
    main()
