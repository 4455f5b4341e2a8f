from __future__ import annotations

import logging

from priory_engine import EngineConfig, build_game_engine, load_content

DEMO_CONTENT = {
    "scenes": [
        {"id": "intro", "text": "A cart rattles north toward Blackpine."},
        {
            "id": "house",
            "text": "The guest house of Saint Catherine is quiet.",
            "exits": {"gate": "gate"},
            "actions": {
                "steward": "menu:steward_menu",
                "bell": "timed:bell_alarm",
            },
        },
        {
            "id": "gate",
            "text": "Saint Catherine's gate stands open to the lane.",
            "exits": {"house": "house"},
            "actions": {"notice": "script:check_progress"},
        },
    ],
    "menus": [
        {
            "id": "life_path",
            "prompt": "Choose your life path:",
            "options": [{"text": "Farmer's Son"}, {"text": "Merchant's Apprentice"}],
        },
        {
            "id": "steward_menu",
            "prompt": "The steward waits.",
            "options": [
                {
                    "text": "Pledge grain to the village",
                    "response": "The steward nods.",
                    "priory_delta": {"food": -5, "relations": 3},
                    "set_flags": ["grain_pledged"],
                },
                {"text": "Ask about the accounts", "response": "He shows you the accounts."},
            ],
        },
    ],
    "timed": [
        {
            "id": "bell_alarm",
            "prompt": "Smoke rises over the treeline!",
            "seconds": 10,
            "options": [
                {"text": "Ring the bell and warn the village", "response": "You warn them.", "virtue_delta": {"charity": 1}},
                {"text": "Watch the treeline", "response": "You watch."},
            ],
        }
    ],
    "life_paths": [
        {"id": "farmer_son", "name": "Farmer's Son", "coin_min": 2, "coin_max": 4, "starter_items": ["Sickle"]},
        {"id": "merchant_apprentice", "name": "Merchant's Apprentice", "coin_min": 20, "coin_max": 20},
    ],
    "quests": [{"id": "main_rebuild_priory", "title": "Rebuild the Priory"}],
}


def show(lines) -> None:
    for line in lines:
        print(line)
    print()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    config = EngineConfig(save_secret="demo-secret", build_id="demo", database_url="sqlite+pysqlite:///:memory:")
    engine = build_game_engine(config, content=load_content(DEMO_CONTENT))

    code = engine.create_party()
    print("party code:", code)
    show(engine.start_new_game("Ada", "female").lines)

    for command in ("1", "look", "talk steward", "1", "examine bell"):
        out = engine.handle_input(command)
        show(out.lines)
        if out.timed_prompt is not None:
            # a real client would start a countdown here; let it lapse
            show(engine.resolve_timed(None).lines)

    save_code, fingerprint = engine.save_game()
    print("save code:", save_code, "fingerprint:", fingerprint)

    outcome = engine.resume(save_code)
    print(outcome.message)
    print("priory:", engine.state.priory)


if __name__ == "__main__":
    main()
