#!/usr/bin/env python3
import argparse
import base64
import json
import time
from pathlib import Path

import httpx


def dump_contact_sheets(client: httpx.Client, api_base: str, video_path: Path, out_dir: Path) -> None:
    with video_path.open("rb") as video_file:
        files = {"video": (video_path.name, video_file, "application/octet-stream")}
        resp = client.post(f"{api_base}/api/contact-sheets", files=files)
    resp.raise_for_status()
    payload = resp.json()
    out_dir.mkdir(parents=True, exist_ok=True)
    for index, sheet in enumerate(payload["contactSheets"]):
        _, encoded = sheet["imageDataUrl"].split(",", 1)
        target = out_dir / f"sheet_{index:02d}_{sheet['timestamp']:.1f}s.jpg"
        target.write_bytes(base64.b64decode(encoded))
    print(
        f"duration={payload['videoDuration']:.2f}s interval={payload['interval']:.3f}s "
        f"sheets={len(payload['contactSheets'])} -> {out_dir}"
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Upload a recording and follow its coaching session.")
    parser.add_argument("--video", required=True, help="Path to local video file to upload.")
    parser.add_argument("--audio", help="Optional separate audio track.")
    parser.add_argument("--task-id", default="ted-talk", help="Task to grade against.")
    parser.add_argument("--api-base", default="http://127.0.0.1:8000", help="Backend base URL.")
    parser.add_argument("--sheets-dir", help="Only build contact sheets and write them here as JPEGs.")
    parser.add_argument("--timeout-seconds", type=int, default=600, help="Polling timeout.")
    args = parser.parse_args()

    video_path = Path(args.video).expanduser().resolve()
    if not video_path.exists():
        raise FileNotFoundError(f"Video file not found: {video_path}")

    with httpx.Client(timeout=300.0, trust_env=False) as client:
        if args.sheets_dir:
            dump_contact_sheets(client, args.api_base, video_path, Path(args.sheets_dir))
            return

        with video_path.open("rb") as video_file:
            files = {"video": (video_path.name, video_file, "application/octet-stream")}
            audio_file = None
            if args.audio:
                audio_file = Path(args.audio).expanduser().resolve().open("rb")
                files["audio"] = (Path(args.audio).name, audio_file, "application/octet-stream")
            try:
                create_resp = client.post(
                    f"{args.api_base}/api/sessions",
                    files=files,
                    data={"task_id": args.task_id},
                )
            finally:
                if audio_file is not None:
                    audio_file.close()
        create_resp.raise_for_status()
        session_id = create_resp.json()["session_id"]
        print(f"created session: {session_id}")

        started = time.time()
        final_payload = None
        last_line = ""
        while time.time() - started < args.timeout_seconds:
            poll_resp = client.get(f"{args.api_base}/api/sessions/{session_id}")
            poll_resp.raise_for_status()
            payload = poll_resp.json()
            steps = payload.get("steps") or {}
            line = " ".join(
                f"{name}={step.get('status')}"
                + (f"({step['progress']:.0f}%)" if step.get("progress") is not None else "")
                for name, step in steps.items()
            )
            if line != last_line:
                print(f"[{payload.get('status')}] {line}")
                last_line = line
            if payload.get("status") in {"complete", "error", "cancelled"}:
                final_payload = payload
                break
            time.sleep(2)

    if not final_payload:
        raise TimeoutError(f"Timed out waiting for session completion: {session_id}")
    if final_payload.get("status") != "complete":
        raise RuntimeError(f"Session ended as {final_payload.get('status')}: {final_payload.get('error')}")

    analysis = final_payload.get("analysis") or {}
    print(f"contact sheets: {final_payload.get('contact_sheet_count')}")
    print(f"score: {analysis.get('overallScore')}")
    print(json.dumps(analysis, indent=2))


if __name__ == "__main__":
    main()
