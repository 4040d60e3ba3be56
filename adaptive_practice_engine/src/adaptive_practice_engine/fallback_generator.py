"""
Template-Based Fallback Question Generation

Synthesizes a question locally when the primary (AI) source is unavailable.

Generation is a pure function of (subject, skill_area, difficulty_level, seed):
- The template is picked as `seed mod template_count`
- Operands, flavour text and option order come from a `random.Random`
  seeded with all four inputs
- `generate()` never raises; any internal error yields a fixed generic question
"""

import logging
import random
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from adaptive_practice_engine.question_record import QuestionOrigin, QuestionRecord, build_question

logger = logging.getLogger(__name__)

MIN_LEVEL = 1
MAX_LEVEL = 5

# Operand range per difficulty level
OPERAND_RANGES: Dict[int, Tuple[int, int]] = {
    1: (1, 10),
    2: (5, 20),
    3: (10, 50),
    4: (20, 100),
    5: (50, 500),
}

SCENARIOS = [
    "at the space station", "on a treasure hunt", "at the magical carnival",
    "in the enchanted forest", "at the robot factory", "on the dinosaur expedition",
    "in the underwater kingdom", "in the future city", "at the superhero academy",
    "on the time travel adventure", "at the crystal palace", "in the cloud city",
    "at the dragon sanctuary", "on the pirate voyage", "in the secret laboratory",
    "in the fairy garden", "during the space race", "in the candy kingdom",
    "at the ancient temple", "on the arctic expedition",
]

CHARACTERS = [
    "Captain Nova", "Princess Luna", "Robot Rex", "Wizard Zane",
    "Explorer Emma", "Detective Sam", "Pilot Pete", "Chef Clara",
    "Scientist Sara", "Artist Alex", "Builder Bob", "Teacher Tina",
    "Admiral Zoom", "Queen Stella", "Inventor Max", "Knight Aria",
    "Dr. Phoenix", "Commander Sky", "Ranger Jade", "Professor Bolt",
]

MATH_TEMPLATES = ("addition", "subtraction", "multiplication", "division", "comparison", "pattern")

# (kind, word, correct option, wrong options)
WORD_TEMPLATES = [
    ("synonym", "happy", "joyful", ["sad", "angry", "tired"]),
    ("antonym", "big", "small", ["huge", "wide", "tall"]),
    ("rhyme", "cat", "bat", ["dog", "fish", "bird"]),
    ("plural", "child", "children", ["childs", "childes", "childen"]),
    ("synonym", "fast", "quick", ["slow", "lazy", "sleepy"]),
    ("antonym", "hot", "cold", ["warm", "sunny", "nice"]),
    ("rhyme", "sun", "fun", ["moon", "star", "sky"]),
    ("plural", "mouse", "mice", ["mouses", "mousies", "meese"]),
    ("past tense", "run", "ran", ["running", "runs", "runner"]),
    ("synonym", "smart", "clever", ["silly", "slow", "noisy"]),
]

WORD_PROMPTS = {
    "synonym": '"{word}" means the same as which word?',
    "antonym": '"{word}" is the opposite of which word?',
    "rhyme": '"{word}" rhymes with which word?',
    "plural": '"{word}": what is its plural?',
    "past tense": '"{word}": what is its past tense?',
}

# (passage, question, correct option, wrong options)
READING_TEMPLATES = [
    ("The bright moon shines in the dark sky.", "What shines in the sky?", "moon", ["star", "sun", "cloud"]),
    ("The red car drives down the busy street.", "What drives down the street?", "car", ["bike", "bus", "truck"]),
    ("The small bird sings loudly in the tree.", "Where does the bird sing?", "tree", ["house", "sky", "ground"]),
    ("The happy child plays with colorful toys.", "What does the child play with?", "toys", ["books", "games", "friends"]),
    ("The warm sun melts the white snow.", "What melts the snow?", "sun", ["rain", "wind", "ice"]),
]

# (question, correct option, wrong options, concept)
SCIENCE_TEMPLATES = [
    ("What gas do we breathe in to stay alive?", "oxygen", ["nitrogen", "carbon dioxide", "helium"], "respiration"),
    ("What do plants use to make their food?", "sunlight", ["music", "sand", "plastic"], "photosynthesis"),
    ("How many legs does a spider have?", "8", ["6", "4", "10"], "animal bodies"),
    ("Which star is closest to Earth?", "the Sun", ["the Moon", "Mars", "Venus"], "space"),
    ("What do fish use to breathe underwater?", "gills", ["lungs", "fins", "scales"], "animal bodies"),
    ("Water turns into ice when it gets...", "cold", ["hot", "loud", "bright"], "states of matter"),
    ("Which planet is closest to the Sun?", "Mercury", ["Earth", "Mars", "Jupiter"], "space"),
    ("What does a caterpillar turn into?", "a butterfly", ["a bird", "a frog", "a bee"], "life cycles"),
]

# (question, correct option, wrong options)
GENERAL_TEMPLATES = [
    ("What color do you get when you mix red and blue?", "purple", ["green", "orange", "yellow"]),
    ("How many days are there in a week?", "7", ["5", "6", "10"]),
    ("Which shape has three sides?", "triangle", ["square", "circle", "rectangle"]),
    ("Which season comes after winter?", "spring", ["summer", "autumn", "winter"]),
    ("How many months are there in a year?", "12", ["10", "11", "13"]),
]

SAFE_DEFAULT = {
    "prompt": "Which of these is a shape?",
    "options": ("circle", "apple", "river", "song"),
    "correct_index": 0,
    "explanation": "A circle is a shape. The others are not shapes.",
}


def subject_category(subject: str) -> str:
    """Map a free-form subject name onto a template category."""
    name = (subject or "").casefold()
    if "math" in name or "matematik" in name or "arithmetic" in name:
        return "mathematics"
    if any(key in name for key in ("english", "language", "reading", "spelling", "vocabulary")):
        return "language"
    if "science" in name or "natur" in name:
        return "science"
    return "generic"


def clamp_level(level, min_level: int = MIN_LEVEL, max_level: int = MAX_LEVEL) -> int:
    try:
        level = int(level)
    except (TypeError, ValueError):
        level = min_level
    return max(min_level, min(max_level, level))


def _distractors(answer: int, deltas: Sequence[int], count: int = 3) -> List[int]:
    """Plausible wrong answers near `answer`: distinct, non-negative, never the answer."""
    wrong: List[int] = []
    for delta in list(deltas) + list(range(2, 2 + count * 4)):
        candidate = answer + delta
        if candidate < 0 or candidate == answer or candidate in wrong:
            continue
        wrong.append(candidate)
        if len(wrong) == count:
            break
    return wrong


def _shuffled(correct: str, wrong: Sequence[str], rng: random.Random) -> Tuple[List[str], int]:
    options = [correct] + [option for option in wrong if option != correct]
    rng.shuffle(options)
    return options, options.index(correct)


class FallbackGenerator:
    """
    Deterministic template bank used when the primary source fails.

    Categories: mathematics, language, science, generic (anything else).
    """

    def __init__(self, min_level: int = MIN_LEVEL, max_level: int = MAX_LEVEL):
        self.min_level = min_level
        self.max_level = max_level
        self._builders: Dict[str, Callable[..., QuestionRecord]] = {
            "mathematics": self._math_question,
            "language": self._language_question,
            "science": self._science_question,
            "generic": self._general_question,
        }

    def generate(
        self,
        subject: str,
        skill_area: str,
        difficulty_level: int,
        seed: int
    ) -> QuestionRecord:
        """
        Build a fallback question.

        Args:
            subject: Subject name (e.g. "mathematics", "english")
            skill_area: Skill area within the subject
            difficulty_level: Current difficulty level (clamped to the bank's range)
            seed: Caller-derived seed (timestamp + attempt index in practice)

        Returns:
            A valid QuestionRecord with origin FALLBACK
        """
        try:
            level = clamp_level(difficulty_level, self.min_level, self.max_level)
            seed = int(seed)
            rng = random.Random(f"{subject}|{skill_area}|{level}|{seed}")
            builder = self._builders[subject_category(subject)]
            return builder(skill_area or "", level, seed, rng)
        except Exception as e:
            logger.warning(f"⚠️ [FallbackGenerator] Template generation failed, using default question: {e}")
            return self.safe_default(skill_area)

    def safe_default(self, skill_area: Optional[str] = None) -> QuestionRecord:
        return build_question(
            prompt=SAFE_DEFAULT["prompt"],
            options=SAFE_DEFAULT["options"],
            correct_index=SAFE_DEFAULT["correct_index"],
            explanation=SAFE_DEFAULT["explanation"],
            learning_objectives=[skill_area] if skill_area else ["General knowledge"],
            concepts_covered=["general knowledge"],
            origin=QuestionOrigin.FALLBACK,
        )

    @staticmethod
    def _flavour(rng: random.Random) -> Tuple[str, str]:
        return rng.choice(SCENARIOS), rng.choice(CHARACTERS)

    def _math_question(self, skill_area: str, level: int, seed: int, rng: random.Random) -> QuestionRecord:
        operation = MATH_TEMPLATES[seed % len(MATH_TEMPLATES)]
        scenario, character = self._flavour(rng)
        low, high = OPERAND_RANGES[level]
        first, second = rng.randint(low, high), rng.randint(low, high)
        num1, num2 = max(first, second), min(first, second)
        estimated_time = 30 + 5 * max(0, level - 3)

        if operation == "addition":
            answer = num1 + num2
            prompt = (f"What is {num1} + {num2}? {character} collected {num1} crystals "
                      f"{scenario} and then found {num2} more.")
            wrong = _distractors(answer, [-1, 1, 10, -10])
            explanation = f"{num1} + {num2} = {answer}"
        elif operation == "subtraction":
            answer = num1 - num2
            prompt = (f"What is {num1} - {num2}? {character} had {num1} power gems "
                      f"{scenario} and used {num2} of them.")
            wrong = _distractors(answer, [1, -1, 10, num2 - answer])
            explanation = f"{num1} - {num2} = {answer}"
        elif operation == "multiplication":
            top = 4 + 2 * level
            factor1, factor2 = rng.randint(2, top), rng.randint(2, top)
            answer = factor1 * factor2
            prompt = (f"What is {factor1} × {factor2}? {character} found {factor1} treasure chests "
                      f"{scenario}, each holding {factor2} coins.")
            wrong = _distractors(answer, [factor1, -factor2, factor2, -factor1])
            explanation = f"{factor1} × {factor2} = {answer}"
        elif operation == "division":
            divisor = rng.randint(2, 3 + 2 * level)
            answer = rng.randint(2, 5 + 3 * level)
            dividend = answer * divisor
            prompt = (f"What is {dividend} ÷ {divisor}? {character} shares {dividend} potions "
                      f"equally between {divisor} friends {scenario}.")
            wrong = _distractors(answer, [1, -1, 2, divisor - answer])
            explanation = f"{dividend} ÷ {divisor} = {answer}, because {answer} × {divisor} = {dividend}"
        elif operation == "comparison":
            if first == second:
                second = first + rng.randint(1, max(1, level))
            is_greater = first > second
            prompt = (f"Is {first} greater than {second}? {character} has {first} energy points "
                      f"{scenario} and the next level needs more than {second}.")
            options, correct_index = _shuffled("Yes" if is_greater else "No",
                                               ["No" if is_greater else "Yes"], rng)
            return build_question(
                prompt=prompt,
                options=options,
                correct_index=correct_index,
                explanation=f"{first} {'>' if is_greater else '<'} {second}",
                learning_objectives=["Comparing numbers", skill_area or "Number sense"],
                estimated_time_seconds=estimated_time,
                concepts_covered=["comparison"],
                origin=QuestionOrigin.FALLBACK,
            )
        else:
            step = rng.randint(2, 2 + 2 * level)
            start = rng.randint(low, high)
            sequence = [start + step * i for i in range(4)]
            answer = start + step * 4
            prompt = (f"What comes next: {', '.join(str(n) for n in sequence)}, ___? "
                      f"{character} spotted this pattern {scenario}.")
            wrong = _distractors(answer, [step, -step, 1, -1])
            explanation = f"The numbers go up by {step} each time, so the next one is {answer}."
            estimated_time += 10

        options, correct_index = _shuffled(str(answer), [str(n) for n in wrong], rng)
        return build_question(
            prompt=prompt,
            options=options,
            correct_index=correct_index,
            explanation=explanation,
            learning_objectives=[f"{operation.capitalize()} practice", skill_area or "Problem solving"],
            estimated_time_seconds=estimated_time,
            concepts_covered=[operation],
            origin=QuestionOrigin.FALLBACK,
        )

    def _language_question(self, skill_area: str, level: int, seed: int, rng: random.Random) -> QuestionRecord:
        scenario, character = self._flavour(rng)
        index = seed % (len(WORD_TEMPLATES) + len(READING_TEMPLATES))

        if index < len(WORD_TEMPLATES):
            kind, word, correct, wrong = WORD_TEMPLATES[index]
            prompt = f"{WORD_PROMPTS[kind].format(word=word)} Help {character} {scenario}!"
            options, correct_index = _shuffled(correct, wrong, rng)
            return build_question(
                prompt=prompt,
                options=options,
                correct_index=correct_index,
                explanation=f'"{correct}" is the {kind} we were looking for with "{word}".',
                learning_objectives=[f"{kind.capitalize()} identification", skill_area or "Vocabulary"],
                estimated_time_seconds=30,
                concepts_covered=[kind],
                origin=QuestionOrigin.FALLBACK,
            )

        passage, question, correct, wrong = READING_TEMPLATES[index - len(WORD_TEMPLATES)]
        options, correct_index = _shuffled(correct, wrong, rng)
        return build_question(
            prompt=f'Read: "{passage}" {question}',
            options=options,
            correct_index=correct_index,
            explanation=f'The text says "{passage}", so the answer is "{correct}".',
            learning_objectives=["Reading comprehension", skill_area or "Reading"],
            estimated_time_seconds=25,
            concepts_covered=["reading comprehension"],
            origin=QuestionOrigin.FALLBACK,
        )

    def _science_question(self, skill_area: str, level: int, seed: int, rng: random.Random) -> QuestionRecord:
        question, correct, wrong, concept = SCIENCE_TEMPLATES[seed % len(SCIENCE_TEMPLATES)]
        options, correct_index = _shuffled(correct, wrong, rng)
        return build_question(
            prompt=question,
            options=options,
            correct_index=correct_index,
            explanation=f"The correct answer is {correct}.",
            learning_objectives=["Science facts", skill_area or "Science"],
            estimated_time_seconds=30,
            concepts_covered=[concept],
            origin=QuestionOrigin.FALLBACK,
        )

    def _general_question(self, skill_area: str, level: int, seed: int, rng: random.Random) -> QuestionRecord:
        question, correct, wrong = GENERAL_TEMPLATES[seed % len(GENERAL_TEMPLATES)]
        scenario, character = self._flavour(rng)
        options, correct_index = _shuffled(correct, wrong, rng)
        return build_question(
            prompt=f"{question} {character} wants to know {scenario}.",
            options=options,
            correct_index=correct_index,
            explanation=f"{character} learned something new: the answer is {correct}.",
            learning_objectives=["General knowledge", skill_area or "Critical thinking"],
            estimated_time_seconds=30,
            concepts_covered=[skill_area or "general knowledge"],
            origin=QuestionOrigin.FALLBACK,
        )
