import argparse
import sys
from pathlib import Path

import uvicorn

from facemark.attendance_service import AttendanceService
from facemark.config import DB_PATH, DEVICE, MATCH_THRESHOLD, REGISTRATION_SAMPLES
from facemark.database import AttendanceDatabase
from facemark.exceptions import AttendanceError
from facemark.face_engine import load_face_engine, read_image
from facemark.logger import setup_logger
from facemark.recognition_service import RecognitionService
from facemark.registration_service import PersonProfile, RegistrationService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Face recognition attendance")

    subparsers = parser.add_subparsers(dest="command", required=True)

    register = subparsers.add_parser("register", help="Register or update a face profile")
    register.add_argument("--id", required=True, dest="person_id", help="Person ID")
    register.add_argument("--name", required=True, help="Full name")
    register.add_argument("--department", default="", help="Department or class")
    register.add_argument("--position", default="", help="Position or standing")
    register.add_argument("--parent-email", default="", help="Guardian e-mail for notifications")
    register.add_argument("--image", type=Path, nargs="+", default=None, help="Face image files")
    register.add_argument("--samples", type=int, default=REGISTRATION_SAMPLES, help="Camera samples")
    register.add_argument("--camera", type=int, default=0, help="Webcam index")

    recognize = subparsers.add_parser("recognize", help="Recognize faces and record attendance")
    recognize.add_argument("--image", type=Path, nargs="+", default=None, help="Image files (tried in order)")
    recognize.add_argument("--camera", type=int, default=0, help="Webcam index for live mode")
    recognize.add_argument(
        "--threshold",
        type=float,
        default=MATCH_THRESHOLD,
        help="Maximum Euclidean distance accepted as a match",
    )

    web = subparsers.add_parser("web", help="Launch the attendance API")
    web.add_argument("--host", default="0.0.0.0", help="Host interface")
    web.add_argument("--port", type=int, default=8000, help="Port")

    list_cmd = subparsers.add_parser("list-people", help="List registered people")
    list_cmd.add_argument("--limit", type=int, default=100, help="Max rows to print")

    report = subparsers.add_parser("report", help="Print an attendance report for one person")
    report.add_argument("--id", required=True, dest="person_id", help="Person ID")
    report.add_argument("--days", type=int, default=30, help="Window size in days")

    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = setup_logger("main")

    try:
        if args.command == "register":
            db = AttendanceDatabase(DB_PATH)
            service = RegistrationService(db=db, extractor=load_face_engine(device=DEVICE))
            profile = PersonProfile(
                person_id=args.person_id,
                name=args.name,
                department=args.department,
                position=args.position,
                parent_email=args.parent_email,
            )
            if args.image:
                frames = [read_image(path) for path in args.image]
                service.register_person(profile, frames, image_path=str(args.image[0]))
            else:
                service.register_from_camera(profile, camera_index=args.camera, samples=args.samples)
            print(f"Registration successful for {args.person_id} ({args.name}).")
            return 0

        if args.command == "recognize":
            db = AttendanceDatabase(DB_PATH)
            service = RecognitionService(db=db, extractor=load_face_engine(device=DEVICE), threshold=args.threshold)
            if args.image:
                outcome = service.recognize([read_image(path) for path in args.image])
                if not outcome.face_found:
                    print("No face detected.")
                    return 1
                if outcome.recognized:
                    print(
                        f"{outcome.person.name} ({outcome.person.person_id}) marked {outcome.status}, "
                        f"confidence {outcome.result.confidence:.1f}%"
                    )
                else:
                    print("Face not recognized; recorded as unauthorized.")
                return 0
            service.run(camera_index=args.camera)
            print("Recognition stopped.")
            return 0

        if args.command == "web":
            from facemark.web_app import create_web_app

            app = create_web_app()
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
            return 0

        if args.command == "list-people":
            db = AttendanceDatabase(DB_PATH)
            records = db.list_people()
            if not records:
                print("No people registered.")
                return 0

            print(f"{'Person ID':<16} {'Name':<28} {'Department'}")
            print("-" * 64)
            for record in records[: args.limit]:
                print(f"{record.person_id:<16} {record.name:<28} {record.department}")
            return 0

        if args.command == "report":
            db = AttendanceDatabase(DB_PATH)
            result = AttendanceService(db).attendance_report(args.person_id, window_days=args.days)
            print(
                f"{result.person_id}: {result.date_from} .. {result.date_to}, "
                f"{result.working_days} working days, present {result.present}, late {result.late}, "
                f"absent {result.absent}, rate {result.attendance_rate:.1f}%"
            )
            for row in result.rows:
                print(f"  {row.day.isoformat()}  {row.status:<8} {row.check_in_time or '-'}")
            return 0

    except AttendanceError as exc:
        logger.error("Application error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
