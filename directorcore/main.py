"""Headless command line for Director Core."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import CONFIG_DIR, Config
from .director import DirectorService
from .planner import PlannerSession
from .sections import render_settings_block

if sys.platform == 'win32':
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


def _setup_logging() -> None:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(CONFIG_DIR / "directorcore.log"),
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_text(value: str) -> str:
    """Literal text, or the contents of ``value`` when it names a file."""
    path = Path(value)
    if path.is_file():
        return path.read_text(encoding="utf-8")
    return value


def _print_result(status: int, result) -> int:
    print(json.dumps(result.to_json_dict(), indent=2, ensure_ascii=False))
    if status != 200:
        print(f"Error ({status}): {result.error}", file=sys.stderr)
        return 1
    return 0


def _submit(service: DirectorService, body: dict) -> int:
    status, result = asyncio.run(service.handle({}, json.dumps(body)))
    return _print_result(status, result)


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------

def cmd_image(args, service: DirectorService) -> int:
    if args.chat:
        return _chat(args, service)
    return _submit(service, {
        "mode": "image_prompt",
        "payload": {
            "vision_seed_text": args.seed,
            "model": args.model,
            "mood_profile": args.mood,
            "constraints": args.constraints,
        },
    })


def _chat(args, service: DirectorService) -> int:
    """Walk seed -> confirm -> refine/generate at the terminal."""
    token = None

    def stage(body: dict) -> dict | None:
        nonlocal token
        reply = asyncio.run(service.handle_stage({}, json.dumps(body), token))
        if reply.status != 200:
            print(f"Error ({reply.status}): {reply.body.get('error')}")
            return None
        token = reply.token
        return reply.body

    reply = stage({"stage": "seed", "visionSeedText": args.seed, "modelChoice": args.model})
    while reply is not None and not reply.get("summaryConfirmed"):
        print(f"\nSummary: {reply['summary']}\nMood Memory: {reply['moodMemory']}")
        feedback = input("Press Enter to confirm, or type feedback: ").strip()
        if feedback:
            reply = stage({"stage": "confirm", "confirmed": False, "feedback": feedback})
        else:
            reply = stage({"stage": "confirm", "confirmed": True})
    if reply is None:
        return 1

    print("Refinement commands, one per line (empty line to finish):")
    commands = []
    while line := input("> ").strip():
        commands.append(line)

    reply = stage({"stage": "refine", "refinementCommands": commands})
    if reply is None:
        return 1
    print(f"\nPositive Prompt:\n{reply['positivePrompt']}")
    print(f"\nNegative Prompt:\n{reply['negativePrompt']}")
    print(f"\nSettings:\n{render_settings_block(reply['settings'])}")
    return 0


def cmd_video(args, service: DirectorService) -> int:
    script = _read_text(args.script)
    session = PlannerSession()
    beats = session.segment(script)
    print(f"Script split into {len(beats)} beats.\n")

    for beat in beats:
        print(f"Beat {beat.order} [{beat.energy}]: {beat.title}")
        for question in beat.questions:
            while not question.answered:
                session.answer(question.id, input(f"  {question.prompt}\n  > "))

    print(f"\nEnergy curve: {session.energy_curve_summary()}")
    if input("Approve this energy curve? [y/N] ").strip().lower() not in ("y", "yes"):
        print("Cancelled.")
        return 1
    session.approve_energy_curve()

    if not session.can_submit_video_plan(script):
        print("Planner gate still closed: " + "; ".join(session.gate_reasons(script)))
        return 1

    return _submit(service, {
        "mode": "video_plan",
        "payload": {
            "vision_seed_text": args.seed,
            "script_text": script,
            "tone": args.tone,
            "visual_style": args.style,
            "aspect_ratio": args.aspect,
            "mood_profile": args.mood,
            "planner_context": session.planner_context(),
        },
    })


def cmd_loop(args, service: DirectorService) -> int:
    return _submit(service, {
        "mode": "loop_sequence",
        "payload": {
            "vision_seed_text": args.seed,
            "start_frame_description": args.start_frame,
            "loop_length": args.length,
            "mood_profile": args.mood,
        },
    })


def cmd_assistant(args, service: DirectorService) -> int:
    """Chat with the loop assistant until an empty line."""
    messages: list[dict] = []
    while True:
        status, body = asyncio.run(service.handle_loop_assistant({}, json.dumps({"messages": messages})))
        if status != 200:
            print(f"Error ({status}): {body.get('error')}", file=sys.stderr)
            return 1
        print(f"\n{body['reply']}\n")
        messages.append({"role": "assistant", "content": body["reply"]})
        line = input("> ").strip()
        if not line:
            return 0
        messages.append({"role": "user", "content": line})


def cmd_cycle(args, service: DirectorService) -> int:
    previous = json.loads(_read_text(args.previous)) if args.previous else []
    body = {
        "visionSeed": _read_text(args.seed),
        "inspirationReferences": args.inspiration,
        "startFrames": args.start_frame or [],
        "previousCycles": previous,
        "predictiveMode": args.predictive,
    }
    status, out = asyncio.run(service.handle_loop_cycle({}, json.dumps(body)))
    print(json.dumps(out, indent=2, ensure_ascii=False))
    if status != 200:
        print(f"Error ({status}): {out.get('error')}", file=sys.stderr)
        return 1
    return 0


def cmd_segment(args, service: DirectorService | None = None) -> int:
    session = PlannerSession()
    session.segment(_read_text(args.script))
    print(json.dumps(session.to_dict(), indent=2, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="directorcore", description="Director Core creative gateway")
    sub = parser.add_subparsers(dest="command", required=True)

    image = sub.add_parser("image", help="Compose a still-image prompt")
    image.add_argument("--seed", required=True, help="Vision seed text")
    image.add_argument("--model", choices=["sdxl", "flux", "illustrious"], default="sdxl")
    image.add_argument("--mood", default=None, help="Mood profile from earlier runs")
    image.add_argument("--constraints", default=None)
    image.add_argument("--chat", action="store_true", help="Run the seed/confirm/refine conversation")

    video = sub.add_parser("video", help="Plan a video after answering the planner questions")
    video.add_argument("--seed", required=True)
    video.add_argument("--script", required=True, help="Script text or path to a script file")
    video.add_argument("--tone", choices=["informative", "hype", "calm", "dark", "inspirational"], default="informative")
    video.add_argument("--style", choices=["realistic", "stylized", "anime", "mixed-media"], default="realistic")
    video.add_argument("--aspect", choices=["16:9", "9:16"], default="16:9")
    video.add_argument("--mood", default=None)

    loop = sub.add_parser("loop", help="Plan a seamless loop sequence")
    loop.add_argument("--seed", required=True)
    loop.add_argument("--start-frame", required=True)
    loop.add_argument("--length", type=int, default=None, help="Number of cycles (planner decides if omitted)")
    loop.add_argument("--mood", default=None)

    sub.add_parser("assistant", help="Talk through loop continuity with the loop assistant")

    cycle = sub.add_parser("cycle", help="Generate the next cycle of a running loop")
    cycle.add_argument("--seed", required=True, help="Vision seed text or path")
    cycle.add_argument("--inspiration", default=None)
    cycle.add_argument("--start-frame", action="append", help="Start frame description (repeatable)")
    cycle.add_argument("--previous", default=None, help="JSON list of earlier cycles, or path to one")
    cycle.add_argument("--predictive", action="store_true", help="Let the director anticipate the next beats")

    segment = sub.add_parser("segment", help="Show planner beats for a script")
    segment.add_argument("--script", required=True)

    return parser


COMMANDS = {
    "image": cmd_image,
    "video": cmd_video,
    "loop": cmd_loop,
    "assistant": cmd_assistant,
    "cycle": cmd_cycle,
    "segment": cmd_segment,
}


def main(argv: list[str] | None = None) -> None:
    _setup_logging()
    args = build_parser().parse_args(argv)

    if args.command == "segment":
        sys.exit(cmd_segment(args))

    service = DirectorService(Config.load())
    sys.exit(COMMANDS[args.command](args, service))


if __name__ == "__main__":
    main()
