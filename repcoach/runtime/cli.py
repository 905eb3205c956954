# repcoach/runtime/cli.py
from __future__ import annotations
import logging
import sys
from datetime import datetime
from typing import TextIO

from repcoach.common.config import load_settings
from repcoach.runtime.assembly import WorkoutRuntime, build_local_runtime

COMMANDS = {
    "s": "start",
    "p": "pause",
    "r": "resume",
    "d": "rep",
    "x": "reset",
}

HELP = "commands: [s]tart [p]ause [r]esume [d]one rep rese[x] [h]istory [q]uit"


def _printer(out: TextIO):
    last: dict = {"status": None, "timer": None, "notes": ()}

    def sink(ev: dict):
        if ev.get("type") != "state":
            return
        status = ev["status_message"]
        if status != last["status"]:
            last["status"] = status
            print(f"[{ev['phase']}] {status}", file=out, flush=True)
        timer = ev["timer_seconds"]
        if timer and timer != last["timer"] and timer % 10 == 0:
            print(f"  {timer}s", file=out, flush=True)
        last["timer"] = timer
        notes = tuple(n for n in (ev.get("storage_note"), ev.get("voice_note")) if n)
        for note in notes:
            if note not in last["notes"]:
                print(f"  note: {note}", file=out, flush=True)
        last["notes"] = notes
    return sink


def print_history(runtime: WorkoutRuntime, out: TextIO):
    records = runtime.history()
    if not records:
        print("No workouts recorded yet. Start a session to save your progress!", file=out, flush=True)
        return
    for r in records:
        when = datetime.fromtimestamp(r.completed_at).strftime("%Y-%m-%d %H:%M")
        print(f"  {r.id[:8]}  {r.name}: {r.sets} sets of {r.reps} reps on {when}", file=out, flush=True)


def repl(runtime: WorkoutRuntime, stdin: TextIO = sys.stdin, out: TextIO = sys.stdout):
    print(HELP, file=out, flush=True)
    for line in stdin:
        key = line.strip().lower()[:1]
        if not key:
            continue
        if key == "q":
            break
        if key == "h":
            print_history(runtime, out)
            continue
        name = COMMANDS.get(key)
        if name is None:
            print(HELP, file=out, flush=True)
            continue
        applied = runtime.command(name).result(timeout=5.0)
        if not applied:
            print(f"  ({name} does nothing right now)", file=out, flush=True)


def main():
    settings = load_settings()
    logging.basicConfig(level=settings.log_level)
    runtime = build_local_runtime(settings)
    runtime.set_event_sink(_printer(sys.stdout))
    runtime.run_in_background()
    print(f"{runtime.controller.routine.name} ready. Press Ctrl+C to exit.", flush=True)
    try:
        repl(runtime)
    except KeyboardInterrupt:
        print("\nExiting…", flush=True)
    finally:
        runtime.shutdown()


if __name__ == "__main__":
    main()
