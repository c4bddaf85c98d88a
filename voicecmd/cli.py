import asyncio
import logging
import os
import shutil
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from .app import VoiceApp
from .config import load_config
from .errors import VoiceCommandError
from .notify import ERROR, PENDING, SUCCESS
from .registry import COMMANDS, command_label

log = logging.getLogger(__name__)

c = {'r': '\033[0m', 'b': '\033[34m', 'c': '\033[36m', 'g': '\033[32m', 'y': '\033[33m', 'R': '\033[31m', 'B': '\033[1m', 'bg': '\033[44m', 'bgr': '\033[41m', 'bgg': '\033[42m', 'w': '\033[37m'}

app = None
executor = ThreadPoolExecutor(max_workers=1)
stop_flag = threading.Event()
spinner_frames = ['-', '\\', '|', '/']
spinner_idx = 0


def cls():
    os.system('cls' if os.name == 'nt' else 'clear')

def sz():
    return shutil.get_terminal_size((80, 25))

def at(x, y, t, cl=''):
    print(f"\033[{y};{x}H{c['bg']}{cl}{t}{c['bg']}", end='')

async def ainp(x, y):
    print(f"\033[{y};{x}H", end='', flush=True)
    try:
        return await asyncio.get_running_loop().run_in_executor(executor, input)
    except (EOFError, KeyboardInterrupt):
        stop_flag.set()
        return ''

async def awaitkey():
    cr = sz()
    msg = "press enter to continue..."
    y_pos = cr[1] - 2
    x_pos = max(2, (cr[0] - len(msg)) // 2)
    at(x_pos, y_pos, msg, c['y'])
    await ainp(x_pos + len(msg), y_pos)

def fill():
    cr = sz()
    print(f"{c['bg']}", end='')
    for _ in range(cr[1]):
        print(" " * cr[0])
    print("\033[H", end='')

def box(x, y, w, h, t=""):
    print(f"\033[{y};{x}H{c['bg']}{c['w']}┌{'─' * (w - 2)}┐{c['bg']}")
    if t:
        print(f"\033[{y};{x}H{c['bg']}{c['w']}┤ {c['B']}{t} {c['w']}├{c['bg']}")
    for i in range(1, h - 1):
        print(f"\033[{y + i};{x}H{c['bg']}{c['w']}│{' ' * (w - 2)}│{c['bg']}")
    print(f"\033[{y + h - 1};{x}H{c['bg']}{c['w']}└{'─' * (w - 2)}┘{c['bg']}")

async def spin_animation(x, y, msg):
    global spinner_idx
    try:
        while True:
            at(x, y, f"{c['c']}{spinner_frames[spinner_idx]} {msg}", c['c'])
            spinner_idx = (spinner_idx + 1) % len(spinner_frames)
            await asyncio.sleep(0.1)
    except asyncio.CancelledError:
        at(x, y, " " * (len(msg) + 3), "")


def status_line(status):
    cr = sz()
    at(2, cr[1] - 1, " " * (cr[0] - 4), c['bg'])
    if status is None:
        at(2, cr[1] - 1, "ready" if app.gate.ready else app.gate.state.value, c['bgg'] + c['w'])
        return
    colors = {PENDING: c['y'] + c['B'], SUCCESS: c['bgg'] + c['w'], ERROR: c['bgr'] + c['w']}
    icon = {PENDING: spinner_frames[spinner_idx], SUCCESS: "ok", ERROR: "x"}[status.kind]
    at(2, cr[1] - 1, f"{icon} {status.message}"[:cr[0] - 4], colors[status.kind])
    print("", end='', flush=True)


async def approve(summary):
    cr = sz()
    y = cr[1] - 3
    at(2, y, " " * (cr[0] - 4), c['bg'])
    at(2, y, f"sign tx: {summary}? [y/n]:", c['B'])
    answer = (await ainp(len(summary) + 22, y)).strip().lower()
    return answer == 'y'


async def run_action(coro, x, y, msg):
    spin_task = asyncio.create_task(spin_animation(x, y, msg))
    try:
        return True, await coro
    except VoiceCommandError as e:
        return False, e
    finally:
        spin_task.cancel()
        try: await spin_task
        except asyncio.CancelledError: pass


def stats_box(x, y, w):
    s = app.stats
    box(x, y, w, 6, "stats")
    at(x + 2, y + 2, f"total commands: {s.total}", c['w'])
    at(x + 2, y + 3, f"verified:       {s.verified}", c['g'])
    at(x + 2, y + 4, f"active users:   {s.active_users}", c['c'])


def chart_box(x, y, w, h):
    box(x, y, w, h, "command distribution")
    counts = app.registry.distribution()
    if not counts:
        at(x + 2, y + 2, "no verified commands yet", c['y'])
        return
    total = max(len(app.commands), 1)
    bar_w = max(w - 30, 5)
    for i, (label, n) in enumerate(counts.most_common(h - 3)):
        bar = "█" * max(1, int(n / total * bar_w))
        at(x + 2, y + 2 + i, f"{label[:20]:<20} {bar} {n}", c['g'])


def list_box(x, y, w, h):
    box(x, y, w, h, "voice commands")
    if not app.commands:
        at(x + 2, y + 2, "no commands yet, tap to speak to create one", c['y'])
        return
    at(x + 2, y + 2, "#   id                  time      creator          status", c['c'])
    at(x + 2, y + 3, "─" * (w - 4), c['w'])
    for i, cmd in enumerate(app.commands[:h - 5]):
        ts = datetime.fromtimestamp(cmd.created_at).strftime('%H:%M:%S') if cmd.created_at else "--:--:--"
        state = f"{cmd.clear_value}: {cmd.label}" if cmd.is_verified else "encrypted"
        at(x + 2, y + 4 + i, f"{i + 1:<3} {cmd.id:<19} {ts}  {cmd.creator[:14]:<15}", c['w'])
        at(x + 57, y + 4 + i, state[:w - 59], c['g'] if cmd.is_verified else c['y'])


def menu(x, y, w, h):
    box(x, y, w, h, "commands")
    at(x + 2, y + 2, "[1] tap to speak", c['g'])
    at(x + 2, y + 3, "[2] decrypt command", c['y'])
    at(x + 2, y + 4, "[3] refresh", c['w'])
    at(x + 2, y + 5, "[4] check FHE status", c['w'])
    at(x + 2, y + 6, "[5] retry FHE init", c['w'])
    at(x + 2, y + 7, "[0] exit", c['w'])
    at(x + 2, y + h - 2, "command: ", c['B'] + c['y'])


async def scr():
    cr = sz()
    cls()
    fill()
    t = f" voice commands │ PVAC-HFHE │ {datetime.now().strftime('%H:%M:%S')} "
    at((cr[0] - len(t)) // 2, 1, t, c['B'] + c['w'])
    sidebar_w = 28
    menu(2, 3, sidebar_w, 11)
    stats_box(2, 15, sidebar_w)
    main_x = sidebar_w + 4
    main_w = cr[0] - main_x - 2
    chart_box(main_x, 3, main_w, 10)
    list_box(main_x, 14, main_w, cr[1] - 17)
    status_line(app.notifier.status)
    return await ainp(12, 12)


async def speak():
    cr = sz()
    cls()
    fill()
    w, hb = 60, 18
    x = (cr[0] - w) // 2
    y = (cr[1] - hb) // 2
    box(x, y, w, hb, "tap to speak")
    spin_task = asyncio.create_task(spin_animation(x + 2, y + 2, "listening..."))
    await asyncio.sleep(2)
    spin_task.cancel()
    try: await spin_task
    except asyncio.CancelledError: pass

    for i, text in enumerate(COMMANDS):
        at(x + 2, y + 2 + i, f"[{i + 1}] {text}", c['w'])
    at(x + 2, y + 10, "command to encrypt (or [esc]):", c['y'])
    choice = (await ainp(x + 33, y + 10)).strip()
    if not choice or choice.lower() == 'esc':
        return
    if not choice.isdigit() or not 1 <= int(choice) <= len(COMMANDS):
        at(x + 2, y + 12, "invalid command!", c['bgr'] + c['w'])
        await awaitkey()
        return
    value = int(choice)
    ok, result = await run_action(app.submit(value), x + 2, y + 12, "encrypting (client-side FHE)")
    if ok:
        at(x + 2, y + 12, f"submitted {result.id}", c['bgg'] + c['w'])
    else:
        at(x + 2, y + 12, f"error: {result.message}"[:w - 4], c['bgr'] + c['w'])
    await awaitkey()


def detail_lines(cmd):
    ts = datetime.fromtimestamp(cmd.created_at).strftime('%Y-%m-%d %H:%M:%S') if cmd.created_at else "---"
    lines = [
        f"id:       {cmd.id}",
        f"creator:  {cmd.creator}",
        f"created:  {ts}",
        f"status:   {'verified' if cmd.is_verified else 'encrypted'}",
    ]
    if cmd.is_verified:
        lines.append(f"value:    {cmd.clear_value}")
        lines.append(f"command:  {cmd.label}")
    else:
        lines.append("value:    (hidden until decrypted)")
    return lines


async def decrypt():
    cr = sz()
    cls()
    fill()
    w, hb = 70, 16
    x = (cr[0] - w) // 2
    y = (cr[1] - hb) // 2
    box(x, y, w, hb, "decrypt command")
    if not app.commands:
        at(x + 2, y + 2, "no commands", c['R'])
        await awaitkey()
        return
    at(x + 2, y + 2, f"command # (1-{len(app.commands)}) or id:", c['y'])
    ref = (await ainp(x + 34, y + 2)).strip()
    if not ref:
        return
    if ref.isdigit() and 1 <= int(ref) <= len(app.commands):
        command_id = app.commands[int(ref) - 1].id
    else:
        command_id = ref
    ok, result = await run_action(app.disclose(command_id), x + 2, y + 4, "decrypting (proof + on-chain verify)")
    if not ok:
        at(x + 2, y + 4, f"error: {result.message}"[:w - 4], c['bgr'] + c['w'])
    elif result is None:
        at(x + 2, y + 4, "already verified elsewhere, list reloaded", c['y'])
    else:
        at(x + 2, y + 4, f"{command_id}: {result} = {command_label(result)}", c['bgg'] + c['w'])
    cmd = app.registry.get(command_id)
    if cmd is not None:
        at(x + 1, y + 6, "─" * (w - 2), c['w'])
        for i, line in enumerate(detail_lines(cmd)):
            at(x + 2, y + 7 + i, line[:w - 4], c['w'])
    await awaitkey()


async def simple(coro, msg):
    cr = sz()
    ok, result = await run_action(coro, 2, cr[1] - 3, msg)
    status_line(app.notifier.status)
    if not ok:
        at(2, cr[1] - 3, f"error: {result.message}", c['R'])
        await awaitkey()


def signal_handler(sig, frame):
    stop_flag.set()
    sys.exit(0)


async def main(cfg):
    global app
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    app = VoiceApp(cfg)
    app.wallet.set_approver(approve)
    app.notifier.on_change(status_line)
    try:
        cls()
        fill()
        at(2, 2, f"connecting {cfg.addr} ...", c['c'])
        at(2, 3, "initializing FHE engine ...", c['c'])
        print("", end='', flush=True)
        try:
            await app.connect()
        except VoiceCommandError as e:
            log.error("initial load failed: %s", e)

        while not stop_flag.is_set():
            cmd = await scr()
            if cmd == '1':
                await speak()
            elif cmd == '2':
                await decrypt()
            elif cmd == '3':
                await simple(app.refresh(), "refreshing...")
            elif cmd == '4':
                await simple(app.check_availability(), "checking FHE status...")
            elif cmd == '5':
                await simple(app.gate.initialize(), "initializing FHE engine...")
                if app.gate.ready:
                    await simple(app.refresh(), "refreshing...")
            elif cmd in ['0', 'q', '']:
                break
    finally:
        await app.close()
        executor.shutdown(wait=False)


def run():
    try:
        cfg = load_config()
    except VoiceCommandError as e:
        sys.exit(f"[!] {e.message}: {e}")
    logging.basicConfig(
        filename=cfg.log_file,
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if cfg.insecure:
        print(f"{c['R']}WARNING: Using insecure HTTP connection!{c['r']}")
    try:
        asyncio.run(main(cfg))
    except KeyboardInterrupt:
        pass
    except VoiceCommandError as e:
        print(f"{c['r']}[!] {e.message}: {e}")
    finally:
        print(f"{c['r']}")


if __name__ == "__main__":
    run()
