from importlib.metadata import entry_points

RECIPE_GROUP = "provisor.recipes"


def load_recipe(name: str):
    for ep in entry_points(group=RECIPE_GROUP):
        if ep.name == name:
            return ep.load()
    raise ValueError(f"Unknown recipe: {name}")


def discover_recipes() -> list[dict[str, str]]:
    return [{"name": ep.name, "impl": ep.value} for ep in entry_points(group=RECIPE_GROUP)]
