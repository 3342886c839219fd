"""
Lift plugin - powerlifting calculators and a macro log.

Example plugin showing the pieces a Warden plugin can use:
    - LLM tools (exposed as ``lift:one_rep_max`` and friends)
    - an ``init`` hook that creates the plugin's own tables
    - database access through ``ctx.db``, limited to ``plugin_lift_*``
    - help entries listed by ``warden plugins list``

To use:
    mkdir plugins.local
    cp plugins.example/lift.py plugins.local/
    warden plugins list
"""

from __future__ import annotations

import datetime

# Set by init(); tools run after init has completed.
_db = None

WARMUP_PERCENTAGES = (0.4, 0.6, 0.8, 0.9)


def init(ctx):
    global _db
    _db = ctx.db
    ctx.db.exec(
        """
        CREATE TABLE IF NOT EXISTS plugin_lift_macros (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            day TEXT NOT NULL,
            carbs REAL NOT NULL DEFAULT 0,
            protein REAL NOT NULL DEFAULT 0,
            fat REAL NOT NULL DEFAULT 0
        );
        CREATE INDEX IF NOT EXISTS plugin_lift_macros_day ON plugin_lift_macros(day);
        """
    )
    ctx.logger.info("Lift plugin ready")


def destroy(ctx):
    global _db
    _db = None


def one_rep_max(input, config):
    weight = float(input["weight"])
    reps = int(input["reps"])
    if reps < 1:
        return "Reps must be at least 1"
    if reps == 1:
        return f"1RM: {weight:.1f} kg"
    return f"Estimated 1RM (Epley): {weight * (1 + reps / 30):.1f} kg"


def warmup(input, config):
    target = float(input["weight"])
    lines = [f"Warmup for {target:.1f} kg:", "  empty bar x 10"]
    for pct in WARMUP_PERCENTAGES:
        # Round to the nearest 2.5 kg the plates allow.
        lines.append(f"  {round(target * pct / 2.5) * 2.5:.1f} kg x {3 if pct < 0.8 else 1}")
    return "\n".join(lines)


def log_macros(input, config):
    day = input.get("day") or datetime.date.today().isoformat()
    _db.prepare(
        "INSERT INTO plugin_lift_macros (day, carbs, protein, fat) VALUES (?, ?, ?, ?)"
    ).run((day, float(input.get("carbs", 0)), float(input.get("protein", 0)), float(input.get("fat", 0))))
    return macro_totals({"day": day}, config)


def macro_totals(input, config):
    day = input.get("day") or datetime.date.today().isoformat()
    row = _db.prepare(
        "SELECT COALESCE(SUM(carbs), 0) AS carbs, COALESCE(SUM(protein), 0) AS protein, "
        "COALESCE(SUM(fat), 0) AS fat FROM plugin_lift_macros WHERE day = ?"
    ).first((day,))
    calories = row["carbs"] * 4 + row["protein"] * 4 + row["fat"] * 9
    return (
        f"{day}: {row['carbs']:.0f}g carbs, {row['protein']:.0f}g protein, "
        f"{row['fat']:.0f}g fat ({calories:.0f} kcal)"
    )


def _object(properties, required=()):
    return {"type": "object", "properties": properties, "required": list(required)}


plugin = {
    "name": "lift",
    "version": "1.0.0",
    "description": "Powerlifting calculators and macro tracking",
    "init": init,
    "destroy": destroy,
    "tools": [
        {
            "spec": {
                "name": "one_rep_max",
                "description": "Estimate a one-rep max from a weight lifted for a number of reps",
                "input_schema": _object(
                    {"weight": {"type": "number"}, "reps": {"type": "integer"}},
                    ["weight", "reps"],
                ),
            },
            "execute": one_rep_max,
        },
        {
            "spec": {
                "name": "warmup_sets",
                "description": "Suggest warmup sets leading up to a working weight",
                "input_schema": _object({"weight": {"type": "number"}}, ["weight"]),
            },
            "execute": warmup,
        },
        {
            "spec": {
                "name": "log_macros",
                "description": "Log carbs, protein and fat in grams for a day (default today)",
                "input_schema": _object({
                    "carbs": {"type": "number"},
                    "protein": {"type": "number"},
                    "fat": {"type": "number"},
                    "day": {"type": "string", "description": "YYYY-MM-DD"},
                }),
            },
            "execute": log_macros,
        },
        {
            "spec": {
                "name": "macro_totals",
                "description": "Show macro totals for a day (default today)",
                "input_schema": _object({"day": {"type": "string", "description": "YYYY-MM-DD"}}),
            },
            "execute": macro_totals,
        },
    ],
    "help": [
        {"command": "lift 1rm <weight> <reps>", "description": "Estimate a one-rep max", "group": "Lift"},
        {"command": "lift warmup <weight>", "description": "Warmup sets", "group": "Lift"},
        {"command": "lift m c20 p40 f15", "description": "Log macros", "group": "Lift"},
    ],
}
