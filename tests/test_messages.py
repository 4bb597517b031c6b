from arrivalboard.messages import format_display_message, format_speech
from arrivalboard.schedule import ScheduleEntry


def test_format_speech_fills_known_placeholders():
    e = ScheduleEntry(
        id="1",
        arrival_time="08:15",
        supplier_name="Acme",
        supplier_reading="akume",
        material_reading="tekkou",
        lane="3",
    )
    text = format_speech("{supplierReading} {materialReading}, lane {lane}, {arrivalTime}", e)
    assert text == "akume tekkou, lane 3, 08:15"


def test_format_speech_missing_values_and_unknown_placeholders():
    e = ScheduleEntry(id="1", arrival_time="08:15", supplier_name="Acme")
    assert format_speech("{supplierName} yard {yard}", e) == "Acme yard "
    assert format_speech("{supplierName} {driver}", e) == "Acme {driver}"
    assert format_speech("", e) == ""


def test_format_display_message():
    assert format_display_message("Nothing in {beforeMinutes} min", 45) == "Nothing in 45 min"
    assert format_display_message("", 30) == ""
