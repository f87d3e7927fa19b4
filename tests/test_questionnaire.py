"""
Tests for the questionnaire analyzer (text -> QuestionnaireModel).

Line classification is checked kind by kind; the end-to-end tests use a
small screener with a termination, a jump and a filter.
"""

from surveyaudit.conditions import Operator
from surveyaudit.questionnaire import LineKind, analyze_questionnaire, classify_line


SCREENER = "\n".join([
    "SECTION A: SCREENING",
    "S1. Which age group are you in?",
    "1. Under 18 (Terminate)",
    "2. Aged 18-34",
    "3. Aged 35 or older",
    "S4. Do you own a car?",
    "1. Yes",
    "2. No (go to S7)",
    "IF S4=1 ASK S5",
    "S5. Which brand?",
    "1. Toyota",
    "2. Ford",
    "S6. How satisfied are you with it?",
    "S7. Where do you live?",
    "1. City",
    "2. Village",
    "",
    "SECTION B: RECOMMENDATION",
    "INTERVIEWER: READ OUT",
    "B1. How likely are you to recommend us? Answer on a 1-10 scale",
    "99. Don't know",
])


class TestClassifyLine:
    """One pure classifier per line kind, first match wins."""

    def test_blank(self):
        assert classify_line("   ").kind is LineKind.BLANK

    def test_section_headers(self):
        assert classify_line("SECTION A: SCREENING").kind is LineKind.SECTION_HEADER
        assert classify_line("Part 2. Media use").kind is LineKind.SECTION_HEADER
        assert classify_line("DEMOGRAPHICS").kind is LineKind.SECTION_HEADER
        assert classify_line("РАЗДЕЛ 1. ДЕМОГРАФИЯ").kind is LineKind.SECTION_HEADER
        assert classify_line("ԲԱԺԻՆ 2").kind is LineKind.SECTION_HEADER

    def test_instructions(self):
        assert classify_line("READ OUT ALL OPTIONS").kind is LineKind.INSTRUCTION
        assert classify_line("[SHOW CARD 3]").kind is LineKind.INSTRUCTION
        assert classify_line("ЗАЧИТАТЬ ВАРИАНТЫ").kind is LineKind.INSTRUCTION

    def test_instruction_carries_scale(self):
        line = classify_line("READ OUT: use a 1-5 scale")
        assert line.kind is LineKind.INSTRUCTION
        assert line.scale == (1, 5)

    def test_instruction_prefix_with_routing(self):
        line = classify_line("INTERVIEWER: ASK IF S4=1")
        assert line.kind is LineKind.ROUTING

    def test_routing(self):
        line = classify_line("IF S4=1 ASK S5")
        assert line.kind is LineKind.ROUTING
        assert line.directives[0].targets == ["S5"]

    def test_answer_option(self):
        line = classify_line("2. No (go to S7)")
        assert line.kind is LineKind.ANSWER_OPTION
        assert line.code == "2"
        assert line.label == "No"
        assert line.directives[0].targets == ["S7"]

    def test_answer_option_separators(self):
        assert classify_line("1 = Yes").code == "1"
        assert classify_line("3) Maybe").code == "3"
        assert classify_line("99 Don't know").code == "99"

    def test_number_without_text_is_not_an_option(self):
        assert classify_line("18-34").kind is LineKind.CONTINUATION

    def test_question(self):
        line = classify_line("Q1a. What is your age?")
        assert line.kind is LineKind.QUESTION
        assert line.code == "Q1a"
        assert line.label == "What is your age?"

    def test_dotted_question_code(self):
        assert classify_line("A1.2 Second item").code == "A1.2"

    def test_cyrillic_question_code(self):
        line = classify_line("В1. Ваш возраст?")
        assert line.kind is LineKind.QUESTION
        assert line.code == "В1"

    def test_rejected_code_stems(self):
        assert classify_line("CARD1: show respondent").kind is LineKind.CONTINUATION
        assert classify_line("Page 2 of 10").kind is LineKind.CONTINUATION

    def test_continuation(self):
        line = classify_line("Please think about the last month")
        assert line.kind is LineKind.CONTINUATION
        assert line.scale is None

    def test_all_caps_question_is_not_a_section(self):
        line = classify_line("Q1. WHICH PART OF THE CITY DO YOU LIVE IN?")
        assert line.kind is LineKind.QUESTION
        assert line.code == "Q1"

    def test_range_led_scale_line_is_not_an_option(self):
        line = classify_line("1-10 scale, where 1 is not at all satisfied")
        assert line.kind is LineKind.CONTINUATION
        assert line.scale == (1, 10)

    def test_range_led_options_stay_options(self):
        assert classify_line("2 - 3 times a week").code == "2"
        assert classify_line("1-2 раза в неделю").kind is LineKind.ANSWER_OPTION

    def test_scale_widths(self):
        assert classify_line("Rate on a 0-30 scale").scale is None
        assert classify_line("Rate on a 0-30 scale", 2, 40).scale == (0, 30)
        assert classify_line("Rate on a 1-5 scale", 6, 10).scale is None


class TestAnalyzeQuestionnaire:
    """End-to-end over the screener text."""

    def setup_method(self):
        self.model = analyze_questionnaire(SCREENER)

    def test_questions_and_sections(self):
        assert self.model.codes == ["S1", "S4", "S5", "S6", "S7", "B1"]
        assert self.model.sections == ["SECTION A: SCREENING", "SECTION B: RECOMMENDATION"]
        assert self.model.get_question("S4").section == "SECTION A: SCREENING"
        assert self.model.get_question("B1").section == "SECTION B: RECOMMENDATION"

    def test_answer_codes(self):
        s1 = self.model.get_question("S1")
        assert s1.valid_codes == {1, 2, 3}
        assert s1.code_labels[1] == "Under 18"

    def test_scale_hint_unioned(self):
        b1 = self.model.get_question("B1")
        assert b1.scale_range == (1, 10)
        assert b1.valid_codes == set(range(1, 11)) | {99}

    def test_question_without_options(self):
        assert self.model.get_question("S6").valid_codes == set()

    def test_termination_skips_every_later_question(self):
        [rule] = [r for r in self.model.routing_rules if r.terminates]
        assert rule.condition_variable == "S1"
        assert rule.condition_values == frozenset({1})
        assert rule.skip_targets == ("S4", "S5", "S6", "S7", "B1")

    def test_goto_skips_questions_in_between(self):
        [rule] = [r for r in self.model.routing_rules if r.goto_destination]
        assert rule.condition_variable == "S4"
        assert rule.condition_values == frozenset({2})
        assert rule.goto_destination == "S7"
        assert rule.skip_targets == ("S5", "S6")

    def test_ask_rule(self):
        [rule] = [r for r in self.model.routing_rules if r.targets]
        assert rule.condition_variable == "S4"
        assert rule.operator is Operator.EQ
        assert rule.targets == ("S5",)
        assert rule.source_text == "IF S4=1 ASK S5"

    def test_rule_order_follows_text(self):
        kinds = [("terminate" if r.terminates else "goto" if r.goto_destination else "ask")
                 for r in self.model.routing_rules]
        assert kinds == ["terminate", "goto", "ask"]


class TestAnalyzerEdgeCases:
    def test_empty_text(self):
        model = analyze_questionnaire("")
        assert model.questions == []
        assert model.routing_rules == []

    def test_unrecognized_text(self):
        model = analyze_questionnaire("Thank you for taking part.\nGoodbye.")
        assert model.questions == []

    def test_repeated_code_reopens_question(self):
        model = analyze_questionnaire("\n".join([
            "Q1. Brand used",
            "1. Alpha",
            "Q2. Something else",
            "Q1. Brand used (continued)",
            "2. Beta",
        ]))
        assert model.codes == ["Q1", "Q2"]
        assert model.get_question("Q1").valid_codes == {1, 2}
        assert model.get_question("Q1").label == "Brand used"

    def test_pending_filter_gates_next_question(self):
        model = analyze_questionnaire("S4. Car?\n1. Yes\n2. No\nASK IF S4=1\nS5. Brand?")
        [rule] = model.routing_rules
        assert rule.targets == ("S5",)

    def test_filter_at_end_gates_last_question(self):
        model = analyze_questionnaire("S4. Car?\n1. Yes\nS5. Brand?\nASK IF S4=1")
        [rule] = model.routing_rules
        assert rule.targets == ("S5",)

    def test_inline_filter_on_question_line(self):
        model = analyze_questionnaire("S4. Car?\n1. Yes\nS5. [ASK IF S4=1] Brand?")
        [rule] = model.routing_rules
        assert rule.targets == ("S5",)
        assert model.get_question("S5").label == "Brand?"

    def test_section_closes_question(self):
        model = analyze_questionnaire("Q1. Age\nSECTION B\n1. Orphan option")
        assert model.get_question("Q1").valid_codes == set()

    def test_skip_range_expanded_in_question_order(self):
        model = analyze_questionnaire("\n".join([
            "Q1. A?", "1. Yes", "2. No",
            "SKIP Q2-Q4 IF Q1=2",
            "Q2. B?", "Q3. C?", "Q4. D?", "Q5. E?",
        ]))
        [rule] = model.routing_rules
        assert rule.skip_targets == ("Q2", "Q3", "Q4")

    def test_disjunctive_rule(self):
        model = analyze_questionnaire("Q1. A?\nQ2. B?\nIF Q1=1 OR Q2=1 ASK Q3\nQ3. C?")
        assert len(model.routing_rules) == 2
        assert all(r.disjunctive for r in model.routing_rules)

    def test_armenian_scale_on_continuation_line(self):
        model = analyze_questionnaire("Q1. Գոհունակություն\nԳնահատեք 1-5 սանդղակով")
        assert model.get_question("Q1").scale_range == (1, 5)

    def test_scale_description_under_question(self):
        model = analyze_questionnaire(
            "Q7. How satisfied are you overall?\n1-10 scale, where 1 is not at all satisfied")
        q7 = model.get_question("Q7")
        assert q7.scale_range == (1, 10)
        assert q7.valid_codes == set(range(1, 11))
        assert q7.code_labels == {}

    def test_all_caps_question_keeps_its_options(self):
        model = analyze_questionnaire("Q1. WHICH PART OF THE CITY DO YOU LIVE IN?\n1. North\n2. South")
        assert model.codes == ["Q1"]
        assert model.get_question("Q1").valid_codes == {1, 2}
        assert model.sections == []

    def test_configured_scale_widths(self):
        text = "Q1. Overall score\nRate on a 0-30 scale"
        assert analyze_questionnaire(text).get_question("Q1").scale_range is None
        assert analyze_questionnaire(text, 2, 40).get_question("Q1").scale_range == (0, 30)
